"""HTTP routers for the VentureForge backend."""
