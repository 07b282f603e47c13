"""standards/ -- Reference standards and their acceptance rules.

Layer rule: standards/ imports from auth/store.py only for the shared engine
factory. It does NOT import from api/ or core/.
"""
