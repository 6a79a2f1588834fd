"""
Application endpoints: students apply and cancel, reviewers decide.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import UserRateThrottle

from ..models import Application
from ..permissions import IsReviewer, IsStudent
from ..serializers.placement import ApplySerializer, DecisionSerializer
from ..services.lifecycle import build_engine


def _serialize(application: Application) -> dict:
    return {
        'id': application.id,
        'studentId': application.student_id,
        'internshipId': application.internship_id,
        'status': application.status,
        'appliedDate': application.applied_date.isoformat() if application.applied_date else None,
        'responseDate': application.response_date.isoformat() if application.response_date else None,
        'rejectionReason': application.rejection_reason or None,
        'reviewedBy': application.reviewed_by_id,
    }


class ApplyRateThrottle(UserRateThrottle):
    scope = 'apply'


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStudent])
@throttle_classes([ApplyRateThrottle])
def apply_to_internship(request, pk: int):
    s = ApplySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    application = build_engine().apply(request.user, pk, s.validated_data['motivationLetter'])
    return Response({'ok': True, 'data': _serialize(application)}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStudent])
def cancel_application(request, pk: int):
    application = build_engine().cancel_application(request.user, pk)
    return Response({'ok': True, 'data': _serialize(application)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewer])
def decide_application(request, pk: int):
    s = DecisionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    application = build_engine().decide_application(
        request.user, pk,
        s.validated_data['decision'],
        s.validated_data.get('rejectionReason'),
    )
    return Response({'ok': True, 'data': _serialize(application)})
