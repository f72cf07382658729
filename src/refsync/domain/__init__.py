"""Pure domain layer: model, errors, ports and the reconciliation core."""
