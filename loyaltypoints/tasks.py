# loyaltypoints/tasks.py
from django_rq.decorators import job
from django.contrib.auth import get_user_model
from rq import Retry

from core.tasks import dispatch_notification
from .services import earn_points

User = get_user_model()


@job('default', retry=Retry(max=3, interval=[60, 120, 240]))
def award_points_task(user_id, points_to_award, reason_message):
    """
    Awards loyalty points outside the request cycle (promotions, goodwill
    credits) and tells the customer about it.
    """
    try:
        user = User.objects.get(id=user_id, is_active=True)
    except User.DoesNotExist:
        return f"User {user_id} not found or inactive."

    if points_to_award <= 0:
        return "Points must be positive."

    new_total = earn_points(user, points_to_award, reason_message)

    dispatch_notification(
        recipient_id=user_id, notification_type='points_earned',
        title=f"🎉 You've Earned {points_to_award} Points!",
        message=f"Reason: {reason_message}",
        data={'points_awarded': points_to_award, 'new_total': new_total}
    )
    return f"Awarded {points_to_award} points to user {user_id}."
