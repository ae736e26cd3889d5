"""
Clients module (riding-school customers; not system users).

- Client CRUD + search by name/phone/email
- Per-client views of subscriptions and lessons
"""
