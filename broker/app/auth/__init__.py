"""
Authentication Package

Local and federated sign-in, sessions and client token issuance.

Modules:
- gate: Per-request policy (guest-only / protected) and the request context
- session: Opaque session handles mapped to principals
- state: The ``state`` value carried through a provider redirect
- providers: Google and Facebook clients behind one interface
- federation: The two legs of a federated login
- tokens: Client token minting and verification
- flows: Sign-in outcome shared by browser and JSON routes
- pages: HTML rendering for browser callers
- routes: Browser endpoints (/auth/*, /profile)

Routers are imported from ``app.auth.routes`` directly; this package does not
re-export them so that ``app.dependencies`` can import the core modules
without pulling in the route layer.
"""
