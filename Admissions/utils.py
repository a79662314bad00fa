import json

from django.conf import settings
from groq import Groq

from SkillGate.errors import SandboxUnavailable
from SkillGate.utils import retry_call


def retry_sandbox_call(fn, *args, **kwargs):
    return retry_call(
        fn,
        *args,
        retry_on=(SandboxUnavailable,),
        max_retries=max(1, settings.EVALUATION_MAX_RETRIES),
        delay=settings.EVALUATION_RETRY_DELAY,
        label="Sandbox run",
        **kwargs,
    )


def generate_response_with_groq(messages, response_format=None, model=None, max_completion_tokens=None):
    """
    Send a chat completion to Groq. Returns ``(content, usage)``; content is
    parsed JSON when ``response_format == "json"``.
    """
    model = model or settings.GROQ_MODEL
    api_key = settings.GROQ_API_KEY

    if not api_key:
        raise ValueError("API key is missing. Please set the GROQ_API_KEY environment variable.")

    client = Groq(api_key=api_key)

    request_args = {
        "messages": messages,
        "model": model,
    }
    if max_completion_tokens:
        request_args["max_completion_tokens"] = max_completion_tokens
    if response_format == "json":
        request_args["response_format"] = {"type": "json_object"}

    def groq_completion_request():
        return client.chat.completions.create(**request_args)

    chat_completion = retry_call(groq_completion_request, label="Groq call")
    response_content = chat_completion.choices[0].message.content
    if response_format == "json":
        response_content = json.loads(response_content)
    usage = chat_completion.usage
    return response_content, (usage.model_dump() if usage is not None else None)
