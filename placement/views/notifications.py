"""
Notification inbox endpoints.  Every call is scoped to ``request.user``.
"""
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..serializers.placement import NotificationListQuerySerializer
from ..services import ledger


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_notifications(request):
    q = NotificationListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    items, total = ledger.list_for_user(
        request.user.id,
        limit=q.validated_data.get('limit'),
        offset=q.validated_data.get('offset', 0),
    )
    return Response({
        'ok': True,
        'data': [ledger.serialize(n) for n in items],
        'pagination': {'total': total, 'offset': q.validated_data.get('offset', 0), 'count': len(items)},
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def unread_count(request):
    return Response({'ok': True, 'count': ledger.unread_count(request.user.id)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_read(request, pk: int):
    notification = ledger.mark_read(request.user.id, pk)
    return Response({'ok': True, 'data': ledger.serialize(notification)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_all_read(request):
    return Response({'ok': True, 'updated': ledger.mark_all_read(request.user.id)})


@api_view(['DELETE'])
@permission_classes([IsAuthenticated])
def delete_notification(request, pk: int):
    ledger.delete(request.user.id, pk)
    return Response(status=status.HTTP_204_NO_CONTENT)
