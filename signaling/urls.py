from django.urls import path
from . import views

urlpatterns = [
    # Health check
    path("health", views.health, name="health"),

    # Presence
    path("presence", views.presence, name="presence"),
    path("presence/<str:user_id>", views.presence_status, name="presence_status"),

    # Call signaling
    path("calls/offer", views.call_offer, name="call_offer"),
    path("calls/answer", views.call_answer, name="call_answer"),
    path("calls/reject", views.call_reject, name="call_reject"),
    path("calls/end", views.call_end, name="call_end"),
    path("calls/signal", views.call_signal, name="call_signal"),
    path("calls/status/<str:user_id>", views.call_status, name="call_status"),

    # Typing indicators and receipts
    path("typing", views.typing, name="typing"),
    path("messages/read", views.message_read, name="message_read"),
    path("messages/delivered", views.message_delivered, name="message_delivered"),

    # Pusher private channel authorization
    path("pusher/auth", views.pusher_auth, name="pusher_auth"),
]
