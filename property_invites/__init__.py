"""
Property invite lifecycle service.

Landlords issue single-use invite tokens for a property; prospective
tenants validate them anonymously and accept them once authenticated,
which links the tenant to exactly one active property.
"""

__version__ = "0.1.0"
