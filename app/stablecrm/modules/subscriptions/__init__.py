"""
Subscriptions module (prepaid lesson bundles).

- Subscription CRUD per client, lessons-remaining counter
- Lesson completion deducts from the active subscription (see lessons.service)
"""
