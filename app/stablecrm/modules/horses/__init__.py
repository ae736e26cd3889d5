"""
Horses module.

- Horse CRUD (nickname, breed, age, status, notes)
- Deletion keeps horses that completed lessons reference (renamed + unavailable)
"""
