"""core/ -- Kernel: configuration, domain types, errors, scope resolution.

Layer rule: core/ imports only stdlib + third-party libraries. It does NOT
import from store/, materialize/, or access/.
"""
