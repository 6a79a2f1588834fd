"""
Internship endpoints.

Deans and service chiefs publish internships, change their status and
correct place counters; only deans may delete one (its applications and
evaluations go with it).  Students apply through
:func:`placement.views.applications.apply_to_internship`.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..models import Internship
from ..permissions import CanManageInternships, IsDean
from ..serializers.placement import CapacitySerializer, InternshipCreateSerializer, InternshipStatusSerializer
from ..services.lifecycle import build_engine


def _serialize(internship: Internship) -> dict:
    return {
        'id': internship.id,
        'title': internship.title,
        'description': internship.description,
        'departmentId': internship.department_id,
        'establishmentId': internship.establishment_id,
        'chiefId': internship.chief_id,
        'totalPlaces': internship.total_places,
        'filledPlaces': internship.filled_places,
        'duration': internship.duration,
        'startDate': internship.start_date.isoformat() if internship.start_date else None,
        'endDate': internship.end_date.isoformat() if internship.end_date else None,
        'requirements': internship.requirements,
        'status': internship.status,
        'createdAt': internship.created_at.isoformat() if internship.created_at else None,
    }


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManageInternships])
def create_internship(request):
    s = InternshipCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = s.validated_data
    internship = build_engine().create_internship(
        request.user,
        title=data['title'],
        description=data['description'],
        department_id=data['departmentId'],
        establishment_id=data['establishmentId'],
        total_places=data['totalPlaces'],
        start_date=data['startDate'],
        end_date=data['endDate'],
        duration=data['duration'],
        requirements=data['requirements'],
        chief_id=data.get('chiefId'),
    )
    return Response({'ok': True, 'data': _serialize(internship)}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManageInternships])
def internship_status(request, pk: int):
    s = InternshipStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    internship = build_engine().change_internship_status(request.user, pk, s.validated_data['status'])
    return Response({'ok': True, 'data': _serialize(internship)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanManageInternships])
def internship_capacity(request, pk: int):
    s = CapacitySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    internship = build_engine().correct_capacity(
        request.user, pk,
        total_places=s.validated_data.get('totalPlaces'),
        filled_places=s.validated_data.get('filledPlaces'),
    )
    return Response({'ok': True, 'data': _serialize(internship)})


@api_view(['DELETE'])
@permission_classes([IsAuthenticated, IsDean])
def delete_internship(request, pk: int):
    build_engine().delete_internship(request.user, pk)
    return Response(status=status.HTTP_204_NO_CONTENT)
