"""auth/ -- Authentication and user accounts for AdBond.

Layer rule: auth/ imports only core/, stdlib, and third-party libraries.
It does NOT import from api/, entities/, or notify/.
api/ and entities/ import from auth/, not the other way around.
"""
