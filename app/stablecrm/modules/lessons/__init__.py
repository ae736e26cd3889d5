"""
Lessons module.

- Lesson scheduling (client, instructors, horses, type, payment, cost)
- Completion: subscription deduction / certificate redemption in one transaction
- iCalendar feed of lessons (calendar.py)
"""
