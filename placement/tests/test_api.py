"""
Integration tests for the placement API.

These exercise the HTTP surface end to end: role gates, the unified
error envelope, the application workflow and the notification inbox.
Tests use Django REST Framework's APIClient within APITestCase.

To run the tests:

```
pytest -q placement/tests
```
"""

from django.test import override_settings
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient, APITestCase

from ..models import Application, Department, Establishment, Internship, Notification, Role, User


@override_settings(PLACEMENT_PUSH_CHANNEL='placement.realtime.push.LocalPushChannel')
class PlacementAPITests(APITestCase):
    def setUp(self) -> None:
        self.establishment = Establishment.objects.create(name='CHU Oran', city='Oran', kind='chu')
        self.department = Department.objects.create(establishment=self.establishment, name='Chirurgie')
        self.dean = User.objects.create_user(username='dean1', password='deanpass', role=Role.DEAN)
        self.chief = User.objects.create_user(
            username='chief1', password='chiefpass', role=Role.SERVICE_CHIEF,
            department=self.department, establishment=self.establishment,
        )
        self.doctor = User.objects.create_user(
            username='doctor1', password='doctorpass', role=Role.DOCTOR,
            department=self.department, establishment=self.establishment,
        )
        self.student1 = User.objects.create_user(username='student1', password='s1pass', role=Role.STUDENT)
        self.student2 = User.objects.create_user(username='student2', password='s2pass', role=Role.STUDENT)
        self.client = APIClient()

    def _as(self, user):
        self.client.force_authenticate(user=user)

    def _create_internship(self, total_places=1):
        self._as(self.chief)
        resp = self.client.post('/api/internships/create', {
            'title': 'Stage de chirurgie',
            'departmentId': self.department.id,
            'establishmentId': self.establishment.id,
            'totalPlaces': total_places,
            'startDate': '2026-03-01',
            'endDate': '2026-06-01',
            'requirements': ['Vaccins à jour'],
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED, resp.data)
        return resp.data['data']

    def test_requires_authentication(self):
        resp = APIClient().get('/api/notifications')
        self.assertIn(resp.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))
        self.assertFalse(resp.data['ok'])

    def test_token_authentication(self):
        token = Token.objects.create(user=self.student1)
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Token {token.key}')
        resp = client.get('/api/notifications/unread-count')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['count'], 0)

    def test_create_internship_and_role_gate(self):
        data = self._create_internship(total_places=2)
        self.assertEqual(data['status'], 'active')
        self.assertEqual(data['filledPlaces'], 0)
        self.assertEqual(data['chiefId'], self.chief.id)
        self.assertEqual(data['requirements'], ['Vaccins à jour'])

        self._as(self.student1)
        resp = self.client.post('/api/internships/create', {'title': 'x'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_invalid_dates_use_error_envelope(self):
        self._as(self.chief)
        resp = self.client.post('/api/internships/create', {
            'title': 'Stage',
            'departmentId': self.department.id,
            'establishmentId': self.establishment.id,
            'totalPlaces': 1,
            'startDate': '2026-06-01',
            'endDate': '2026-03-01',
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.data, {
            'ok': False,
            'error': {
                'code': 'validation_error',
                'message': 'start_date must be before end_date',
                'detail': {'field': 'start_date'},
            },
        })

    def test_application_workflow(self):
        internship = self._create_internship(total_places=1)

        self._as(self.student1)
        resp = self.client.post(f"/api/internships/{internship['id']}/apply", {'motivationLetter': 'Motivé'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        application_id = resp.data['data']['id']

        resp = self.client.post(f"/api/internships/{internship['id']}/apply", {}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data['error']['code'], 'duplicate_application')

        self._as(self.chief)
        resp = self.client.post(f'/api/applications/{application_id}/decide', {'decision': 'accepted'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['data']['status'], 'accepted')
        self.assertEqual(Internship.objects.get(id=internship['id']).status, Internship.STATUS_FULL)

        self._as(self.student2)
        resp = self.client.post(f"/api/internships/{internship['id']}/apply", {}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data['error']['code'], 'capacity_exceeded')

    def test_student_cannot_decide(self):
        internship = self._create_internship()
        self._as(self.student1)
        resp = self.client.post(f"/api/internships/{internship['id']}/apply", {}, format='json')
        application_id = resp.data['data']['id']
        resp = self.client.post(f'/api/applications/{application_id}/decide', {'decision': 'accepted'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Application.objects.get(id=application_id).status, Application.STATUS_PENDING)

    def test_cancel_then_reapply(self):
        internship = self._create_internship()
        self._as(self.student1)
        resp = self.client.post(f"/api/internships/{internship['id']}/apply", {}, format='json')
        application_id = resp.data['data']['id']
        resp = self.client.post(f'/api/applications/{application_id}/cancel')
        self.assertEqual(resp.data['data']['status'], 'cancelled')

        self._as(self.student2)
        resp = self.client.post(f'/api/applications/{application_id}/cancel')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)

        self._as(self.student1)
        resp = self.client.post(f"/api/internships/{internship['id']}/apply", {}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)

    def test_evaluation_workflow(self):
        internship = self._create_internship()
        self._as(self.student1)
        application_id = self.client.post(f"/api/internships/{internship['id']}/apply", {}, format='json').data['data']['id']
        self._as(self.chief)
        self.client.post(f'/api/applications/{application_id}/decide', {'decision': 'accepted'}, format='json')

        self._as(self.doctor)
        resp = self.client.post(f'/api/applications/{application_id}/evaluation')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        evaluation_id = resp.data['data']['id']

        resp = self.client.post(f'/api/evaluations/{evaluation_id}/draft', {'attendance': 60}, format='json')
        self.assertEqual(resp.data['data']['status'], 'in_progress')

        scores = {'attendance': 80, 'practicalSkills': 90, 'professionalBehavior': 70}
        resp = self.client.post(f'/api/evaluations/{evaluation_id}/submit', scores, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['data']['score'], '80.00')
        resp = self.client.post(f'/api/evaluations/{evaluation_id}/submit', scores, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)

        resp = self.client.post(f'/api/evaluations/{evaluation_id}/submit', {**scores, 'attendance': 'abc'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

        self._as(self.chief)
        resp = self.client.post(f'/api/evaluations/{evaluation_id}/validate', {'comments': 'RAS'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data['data']['validatedBy'], self.chief.id)

    def test_status_and_capacity_endpoints(self):
        internship = self._create_internship(total_places=2)
        self._as(self.chief)
        resp = self.client.post(f"/api/internships/{internship['id']}/capacity", {'filledPlaces': 2}, format='json')
        self.assertEqual(resp.data['data']['status'], 'full')
        resp = self.client.post(f"/api/internships/{internship['id']}/status", {'status': 'closed'}, format='json')
        self.assertEqual(resp.data['data']['status'], 'closed')
        resp = self.client.post(f"/api/internships/{internship['id']}/status", {'status': 'active'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(resp.data['error']['code'], 'invalid_transition')

    def test_only_dean_deletes(self):
        internship = self._create_internship()
        resp = self.client.delete(f"/api/internships/{internship['id']}")
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self._as(self.dean)
        resp = self.client.delete(f"/api/internships/{internship['id']}")
        self.assertEqual(resp.status_code, status.HTTP_204_NO_CONTENT)
        resp = self.client.delete(f"/api/internships/{internship['id']}")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    def test_notification_inbox(self):
        self._create_internship()
        self._as(self.student1)
        resp = self.client.get('/api/notifications')
        self.assertEqual(resp.data['pagination']['total'], 1)
        note = resp.data['data'][0]
        self.assertEqual(note['relatedEntityType'], 'Internship')
        self.assertFalse(note['isRead'])

        self.assertEqual(self.client.get('/api/notifications/unread-count').data['count'], 1)
        resp = self.client.post(f"/api/notifications/{note['id']}/read")
        self.assertTrue(resp.data['data']['isRead'])
        self.assertEqual(self.client.get('/api/notifications/unread-count').data['count'], 0)

        # another user's notification is invisible
        self._as(self.student2)
        resp = self.client.post(f"/api/notifications/{note['id']}/read")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        resp = self.client.delete(f"/api/notifications/{note['id']}")
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(self.client.post('/api/notifications/read-all').data['updated'], 1)

        self._as(self.student1)
        resp = self.client.delete(f"/api/notifications/{note['id']}")
        self.assertEqual(resp.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Notification.objects.filter(id=note['id']).exists())

    def test_notification_paging(self):
        for _ in range(3):
            self._create_internship()
        self._as(self.student1)
        resp = self.client.get('/api/notifications', {'limit': 2, 'offset': 1})
        self.assertEqual(resp.data['pagination']['total'], 3)
        self.assertEqual(len(resp.data['data']), 2)
        resp = self.client.get('/api/notifications', {'limit': 0})
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_healthz(self):
        resp = self.client.get('/healthz')
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()['ok'])
