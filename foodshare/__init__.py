"""
FoodShare backend package.

A FastAPI service where donors list surplus food, recipients reserve it and
connected clients are notified of new listings in real time.
"""
