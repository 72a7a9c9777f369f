from types import SimpleNamespace

import pytest

from consultant_service import ConsultantService, build_user_content, FALLBACK_ANSWER, SYSTEM_PROMPT
from errors import ConfigurationError, ValidationError
from models import ChatHistory
from conftest import make_user, auth_headers


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def fake_client(content):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.fixture
def consultant_settings(settings):
    settings.openai_api_key = 'sk-test'
    return settings


def test_context_is_prepended_to_question():
    content = build_user_content('How are we doing?', {'revenue': 1200})
    assert content == 'CLINIC DATA:\n{\n  "revenue": 1200\n}\n\nUSER QUESTION: How are we doing?'
    assert build_user_content('Hi') == 'Hi'


def test_consult_forwards_prompt_and_stores_history(app, consultant_settings):
    client, completions = fake_client('  Raise prices on fillers.  ')
    service = ConsultantService(consultant_settings, client=client)
    user = make_user()

    result = service.consult(user.id, 'What should I change?', {'top_treatment': 'filler'})

    assert result == {'message': 'Raise prices on fillers.'}
    request = completions.requests[0]
    assert request['model'] == 'gpt-4o-mini'
    assert request['max_tokens'] == 1024
    assert request['messages'][0] == {'role': 'system', 'content': SYSTEM_PROMPT}
    assert ChatHistory.query.filter_by(user_id=user.id).one().answer == 'Raise prices on fillers.'


def test_empty_completion_falls_back(app, consultant_settings):
    client, _ = fake_client(None)
    service = ConsultantService(consultant_settings, client=client)
    user = make_user()

    assert service.consult(user.id, 'Anything?') == {'message': FALLBACK_ANSWER}


def test_message_is_required(app, consultant_settings):
    client, completions = fake_client('unused')
    service = ConsultantService(consultant_settings, client=client)

    with pytest.raises(ValidationError):
        service.consult('user-1', '')
    assert completions.requests == []


def test_missing_api_key(settings):
    settings.openai_api_key = None
    with pytest.raises(ConfigurationError):
        ConsultantService(settings)


def test_consultant_endpoint(settings, sms, email):
    from app import create_app
    from models import db

    settings.openai_api_key = 'sk-test'
    client, _ = fake_client('Focus on retention.')
    app = create_app(settings, sms_sender=sms, email_service=email,
                     consultant=ConsultantService(settings, client=client))
    with app.app_context():
        db.create_all()
        user = make_user()
        response = app.test_client().post('/api/functions/openai-consultant',
                                          json={'userMessage': 'Advice?', 'clinicContext': {'patients': 40}},
                                          headers=auth_headers(user))
        db.session.remove()
        db.drop_all()

    assert response.status_code == 200
    assert response.get_json() == {'message': 'Focus on retention.'}
