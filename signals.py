"""
Application events.

Sent after the corresponding change has been committed. Subscribers
connect explicitly, e.g. ``post_created.connect(refresh_listing)``.
"""
from blinker import Namespace

_signals = Namespace()

post_created = _signals.signal('post-created')              # kwargs: post
post_updated = _signals.signal('post-updated')              # kwargs: post
post_deleted = _signals.signal('post-deleted')              # kwargs: post_id
reservation_created = _signals.signal('reservation-created')  # kwargs: reservation
reservation_cancelled = _signals.signal('reservation-cancelled')  # kwargs: reservation_id, post_id
