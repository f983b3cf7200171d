"""core/ -- Kernel: configuration, error taxonomy, and domain dataclasses.

Layer rule: core/ imports only stdlib + third-party libraries. Every other
package may import from core/; core/ imports from none of them.
"""
