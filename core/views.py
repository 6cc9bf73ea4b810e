from rest_framework import viewsets, permissions, filters, generics
from rest_framework.decorators import action
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiResponse
from .models import Notification, Address
from .serializers import UserSerializer, NotificationSerializer, AddressSerializer
from .signals import push_unread_counter


class UserProfileView(generics.RetrieveUpdateAPIView):
    serializer_class = UserSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user


class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [filters.OrderingFilter]
    ordering_fields = ['created_at', 'is_read']
    ordering = ['-created_at']

    def get_queryset(self):
        return Notification.objects.filter(recipient=self.request.user)

    @extend_schema(
        summary="Mark one notification as read",
        request=None,
        responses={
            200: OpenApiResponse(
                description="Notification marked as read",
                examples={"application/json": {"status": "marked as read"}},
            )
        },
    )
    @action(detail=True, methods=['post'])
    def mark_read(self, request, pk=None):
        notification = self.get_object()
        notification.is_read = True
        notification.save(update_fields=['is_read'])
        return Response({'status': 'marked as read'})

    @extend_schema(
        summary="Mark all notifications as read",
        request=None,
        responses={
            200: OpenApiResponse(
                description="All notifications marked as read",
                examples={"application/json": {"status": "all marked as read"}},
            )
        },
    )
    @action(detail=False, methods=['post'])
    def mark_all_read(self, request):
        # queryset.update() skips post_save, so the counter is pushed by hand
        affected = self.get_queryset().filter(is_read=False).update(is_read=True)
        if affected:
            push_unread_counter(request.user.id)
        return Response({'status': 'all marked as read'})

    @action(detail=False, methods=['get'], url_path='unread_count')
    def unread_count(self, request):
        count = self.get_queryset().filter(is_read=False).count()
        return Response({'unread_count': count})


class AddressViewSet(viewsets.ModelViewSet):
    """The signed-in user's saved delivery addresses, default first."""
    serializer_class = AddressSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Address.objects.filter(user=self.request.user)

    def perform_create(self, serializer):
        serializer.save(user=self.request.user)

    @extend_schema(summary="Make this the default delivery address", request=None, responses=AddressSerializer)
    @action(detail=True, methods=['post'], url_path='set-default')
    def set_default(self, request, pk=None):
        address = self.get_object()
        address.is_default = True
        address.save()
        return Response(AddressSerializer(address).data)
