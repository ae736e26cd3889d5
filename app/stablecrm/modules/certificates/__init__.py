"""
Gift certificates module.

- Certificate CRUD (unique number, value, optional client, expiry)
- Certificates become "used" when a lesson paid with them is completed
"""
