"""
Instructors module.

- Instructor CRUD with an active flag
- Instructors with lesson history are deactivated rather than deleted
"""
