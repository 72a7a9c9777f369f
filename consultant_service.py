import json
import logging
import uuid
from openai import OpenAI, OpenAIError
from models import db, ChatHistory
from errors import ValidationError, ProviderError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert business consultant specializing in beauty and wellness clinics. "
    "You provide strategic advice, financial insights, and operational recommendations based on real clinic data. "
    "Use the clinic data provided to support your insights. Be specific with numbers when relevant. "
    "If asked about recommendations, provide concrete, implementable strategies. "
    "Keep the tone friendly yet professional."
)
FALLBACK_ANSWER = "I couldn't generate a response. Please try again."
MAX_TOKENS = 1024


def build_user_content(user_message, clinic_context=None):
    if clinic_context is None:
        return user_message
    return f"CLINIC DATA:\n{json.dumps(clinic_context, indent=2, default=str)}\n\nUSER QUESTION: {user_message}"


class ConsultantService:
    def __init__(self, settings, client=None):
        settings.require_openai()
        self.model = settings.openai_model
        self.client = client or OpenAI(api_key=settings.openai_api_key)

    def consult(self, user_id, user_message, clinic_context=None):
        if not user_message or not isinstance(user_message, str):
            raise ValidationError('userMessage is required')

        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {'role': 'system', 'content': SYSTEM_PROMPT},
                    {'role': 'user', 'content': build_user_content(user_message, clinic_context)},
                ],
                max_tokens=MAX_TOKENS,
            )
        except OpenAIError as e:
            logger.error("OpenAI request failed: %s", e)
            raise ProviderError(f'OpenAI API error: {e}')

        content = completion.choices[0].message.content if completion.choices else None
        answer = (content or '').strip() or FALLBACK_ANSWER

        db.session.add(ChatHistory(id=str(uuid.uuid4()), user_id=user_id, question=user_message, answer=answer))
        db.session.commit()
        return {'message': answer}
