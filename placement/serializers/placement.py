from rest_framework import serializers

from ..models import Application, Internship


class InternshipCreateSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    departmentId = serializers.IntegerField(min_value=1)
    establishmentId = serializers.IntegerField(min_value=1)
    totalPlaces = serializers.IntegerField()
    startDate = serializers.DateField()
    endDate = serializers.DateField()
    duration = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    requirements = serializers.JSONField(required=False, default=list)
    chiefId = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    def validate_requirements(self, value):
        if value in (None, ''):
            return []
        if isinstance(value, str):
            return value
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise serializers.ValidationError('requirements must be a list of strings or a comma separated string')
        return value


class InternshipStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c[0] for c in Internship.STATUS_CHOICES])


class CapacitySerializer(serializers.Serializer):
    totalPlaces = serializers.IntegerField(required=False)
    filledPlaces = serializers.IntegerField(required=False)

    def validate(self, attrs):
        if 'totalPlaces' not in attrs and 'filledPlaces' not in attrs:
            raise serializers.ValidationError('totalPlaces or filledPlaces is required')
        return attrs


class ApplySerializer(serializers.Serializer):
    motivationLetter = serializers.CharField(max_length=5000, required=False, allow_blank=True, default='')


class DecisionSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=[Application.STATUS_ACCEPTED, Application.STATUS_REJECTED])
    rejectionReason = serializers.CharField(max_length=2000, required=False, allow_blank=True, allow_null=True)


class EvaluationDraftSerializer(serializers.Serializer):
    attendance = serializers.IntegerField(required=False)
    practicalSkills = serializers.IntegerField(required=False)
    professionalBehavior = serializers.IntegerField(required=False)
    comments = serializers.CharField(max_length=5000, required=False, allow_blank=True)


class EvaluationSubmitSerializer(serializers.Serializer):
    attendance = serializers.IntegerField()
    practicalSkills = serializers.IntegerField()
    professionalBehavior = serializers.IntegerField()
    comments = serializers.CharField(max_length=5000, required=False, allow_blank=True)


class EvaluationValidateSerializer(serializers.Serializer):
    comments = serializers.CharField(max_length=5000, required=False, allow_blank=True, default='')


class NotificationListQuerySerializer(serializers.Serializer):
    limit = serializers.IntegerField(min_value=1, required=False)
    offset = serializers.IntegerField(min_value=0, required=False, default=0)
