from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.http import JsonResponse
from django.test import RequestFactory, TestCase

from .audit import log_audit_event
from .decorators import role_required
from .models import AuditLog, User


@role_required(['admin', 'operator'])
def staff_only_view(request):
    return JsonResponse({'status': 'success'})


class RoleAccessTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.user_model = get_user_model()
        self.operator = self.user_model.objects.create_user(
            username='operator1',
            password='pass12345',
            role='operator',
        )
        self.teacher = self.user_model.objects.create_user(
            username='teacher1',
            password='pass12345',
            role='teacher',
        )

    def get_as(self, user):
        request = self.factory.get('/fees/reports/dashboard/')
        request.user = user
        return staff_only_view(request)

    def test_anonymous_user_gets_401(self):
        response = self.get_as(AnonymousUser())
        self.assertEqual(response.status_code, 401)

    def test_role_outside_allowed_set_gets_403(self):
        response = self.get_as(self.teacher)
        self.assertEqual(response.status_code, 403)

    def test_allowed_role_passes(self):
        response = self.get_as(self.operator)
        self.assertEqual(response.status_code, 200)

    def test_single_role_string_is_accepted(self):
        view = role_required('teacher')(staff_only_view.__wrapped__)
        request = self.factory.get('/')
        request.user = self.teacher
        self.assertEqual(view(request).status_code, 200)

    def test_superuser_is_always_admin(self):
        superuser = self.user_model.objects.create_superuser('root', 'root@example.com', 'pass12345')
        self.assertEqual(superuser.role, User.ROLE_ADMIN)

    def test_new_users_default_to_operator(self):
        user = self.user_model.objects.create_user(username='clerk', password='pass12345')
        self.assertEqual(user.role, User.ROLE_OPERATOR)


class AuditLogTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username='auditor', password='pass12345', role='admin')

    def test_login_is_audited(self):
        self.client.login(username='auditor', password='pass12345')
        self.assertTrue(AuditLog.objects.filter(action='user.login', user=self.user).exists())

    def test_event_records_request_details(self):
        request = RequestFactory().post('/fees/pay/', HTTP_X_FORWARDED_FOR='10.0.0.7, 10.0.0.1')
        request.user = self.user

        log_audit_event(request, 'fees.payment_collected', target=self.user, details='test')

        entry = AuditLog.objects.get(action='fees.payment_collected')
        self.assertEqual(entry.ip_address, '10.0.0.7')
        self.assertEqual(entry.method, 'POST')
        self.assertEqual(entry.target_model, 'User')
        self.assertEqual(entry.target_id, str(self.user.pk))
