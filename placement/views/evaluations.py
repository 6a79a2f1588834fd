"""
Evaluation endpoints.

A doctor of the internship's department opens the evaluation of an
accepted application, may save drafts, then submits the three scores
once.  The chief in charge validates the submitted evaluation.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..models import Evaluation
from ..permissions import IsDoctor, IsReviewer
from ..serializers.placement import (
    EvaluationDraftSerializer,
    EvaluationSubmitSerializer,
    EvaluationValidateSerializer,
)
from ..services.lifecycle import build_engine


def _serialize(evaluation: Evaluation) -> dict:
    return {
        'id': evaluation.id,
        'studentId': evaluation.student_id,
        'internshipId': evaluation.internship_id,
        'doctorId': evaluation.doctor_id,
        'status': evaluation.status,
        'attendance': evaluation.attendance,
        'practicalSkills': evaluation.practical_skills,
        'professionalBehavior': evaluation.professional_behavior,
        'score': str(evaluation.score) if evaluation.score is not None else None,
        'comments': evaluation.comments,
        'dueDate': evaluation.due_date.isoformat() if evaluation.due_date else None,
        'submissionDate': evaluation.submission_date.isoformat() if evaluation.submission_date else None,
        'validatedBy': evaluation.validated_by_id,
        'validatedAt': evaluation.validated_at.isoformat() if evaluation.validated_at else None,
        'chiefComments': evaluation.chief_comments,
    }


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDoctor])
def open_evaluation(request, pk: int):
    evaluation = build_engine().create_evaluation(request.user, pk)
    return Response({'ok': True, 'data': _serialize(evaluation)}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDoctor])
def save_draft(request, pk: int):
    s = EvaluationDraftSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = s.validated_data
    evaluation = build_engine().save_evaluation_draft(
        request.user, pk,
        attendance=data.get('attendance'),
        practical_skills=data.get('practicalSkills'),
        professional_behavior=data.get('professionalBehavior'),
        comments=data.get('comments'),
    )
    return Response({'ok': True, 'data': _serialize(evaluation)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDoctor])
def submit_evaluation(request, pk: int):
    s = EvaluationSubmitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = s.validated_data
    evaluation = build_engine().submit_evaluation(
        request.user, pk,
        attendance=data['attendance'],
        practical_skills=data['practicalSkills'],
        professional_behavior=data['professionalBehavior'],
        comments=data.get('comments'),
    )
    return Response({'ok': True, 'data': _serialize(evaluation)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReviewer])
def validate_evaluation(request, pk: int):
    s = EvaluationValidateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    evaluation = build_engine().validate_evaluation(request.user, pk, s.validated_data['comments'])
    return Response({'ok': True, 'data': _serialize(evaluation)})
