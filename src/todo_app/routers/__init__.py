"""HTTP routers, one module per resource. Each exposes `router`."""
