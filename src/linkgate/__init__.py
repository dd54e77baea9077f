"""LinkGate: verification gate for monetized short links."""
