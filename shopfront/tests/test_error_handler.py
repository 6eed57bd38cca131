from django.test import SimpleTestCase, override_settings


@override_settings(DEBUG=False)
class ErrorHandlerTests(SimpleTestCase):
    def test_unknown_api_route_returns_json_404(self):
        response = self.client.get('/api/this-url-does-not-exist')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response['Content-Type'], 'application/json')
        self.assertEqual(response.json(), {'message': 'Not found.'})
