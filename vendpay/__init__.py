"""Order, payment reconciliation and material-silo gating for unattended vending machines."""

__version__ = "0.1.0"
