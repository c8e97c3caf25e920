"""keyrotor — signing-key issuance, validation and zero-downtime rotation."""

__version__ = "1.0.0"
