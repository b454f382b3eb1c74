"""
Session client package for the marketplace.

This package keeps the client-local session consistent with the identity
provider and the backend profile:

- app.storage: Secure credential persistence (memory, file, OS keyring).
- app.identity: Identity provider gateway and its Firebase implementation.
- app.backend: Backend session exchange and authorized requests.
- app.session: State machine, startup restoration, event synchronization
  and the explicit sign-in/up/out actions.
- app.main: Wiring and lifecycle.

Design notes:
- Module import must not perform IO. Network and storage access happen in
  explicit calls or in SessionService.start().
- Use the shared/ utilities for logging, metrics, config and errors.
"""
