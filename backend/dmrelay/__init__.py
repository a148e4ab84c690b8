"""Direct-message relay backend.

Two participants join a shared room, exchange text messages in real time,
and get the room's history replayed from durable per-room logs on (re)join.
"""

__version__ = "0.1.0"
