"""Prompt templates for every model function the routers call.

Each function is addressed by a ``(plugin, function)`` pair, e.g.
``("Storage", "EntityRecognition")``. A template is the task-specific
part of the system prompt; ``build_messages`` wraps it with the
grounding rules, the resource context and the chat history passed in
the argument bag.
"""

from typing import Any

SYSTEM_PROMPT = (
    "You are a truthful AI assistant who is an expert on Azure who answers "
    "user's questions about their Azure."
)

REPHRASE_PROMPT = """Rewrite the user's latest question so that it can be understood without the chat history.

- Resolve pronouns and references ("it", "that account", "the second one") using the chat history.
- Keep the meaning and the language of the question. Do not answer it.
- If the question is already self-contained, return it unchanged.

Respond with the rewritten question only."""

GENERAL_INTENT_PROMPT = """Classify the user's question into exactly one of these intents:

- Azure: a general question about Azure or an Azure service other than Storage
- Storage: a question about Azure Storage or the storage accounts in the user's subscription
- Information: a follow-up asking for more information about a previous answer
- Ability: a question about what you can do
- MultipleIntents: the question asks about several unrelated things at once
- Unclear: the question cannot be understood
- Other: the question is not related to Azure

Respond with the intent name only."""

GENERAL_AZURE_PROMPT = """Answer the user's question about Azure.

Be precise and concise. If the question is about resources in the user's
subscription that you have no data for, say so."""

GENERAL_INFORMATION_PROMPT = """The user is asking for more information about an earlier part of the conversation.

Use the chat history to understand what the user is referring to and answer the question."""

STORAGE_INTENT_PROMPT = """Classify the user's question about Azure Storage into exactly one of these intents:

- GeneralInformation: a general question about Azure Storage that does not need data from the user's subscription
- StorageAccounts: a question about the storage accounts in the user's subscription as a group (e.g. "how many storage accounts are without tags?")
- StorageAccount: a question about one specific, named storage account (e.g. "where is xyz storage account located?")
- MultipleIntents: the question asks about several unrelated things at once
- Unclear: the question cannot be understood
- Other: anything else

Respond with the intent name only."""

STORAGE_GENERAL_INFORMATION_PROMPT = """Answer the user's general question about Azure Storage.

Be precise and concise."""

STORAGE_ACCOUNTS_PROMPT = """Answer the user's question using the storage accounts listed in the context.

Each storage account is a YAML document; documents are separated by a line of dashes.
Only use the data in the context. If the context does not contain the answer, say so."""

STORAGE_ACCOUNT_PROMPT = """Answer the user's question using the storage account described in the context.

The storage account is a YAML document. Only use the data in the context.
If the context does not contain the answer, say so."""

ENTITY_RECOGNITION_PROMPT = """Extract the Azure Storage entities mentioned in the user's question.

Respond with a JSON object only, using these keys (null when not mentioned):

{"storage_account": ..., "blob_container": ..., "queue": ..., "table": ..., "file_share": ...}"""

PROMPT_TEMPLATES: dict[tuple[str, str], str] = {
    ("General", "Rephrase"): REPHRASE_PROMPT,
    ("General", "Intent"): GENERAL_INTENT_PROMPT,
    ("General", "Azure"): GENERAL_AZURE_PROMPT,
    ("General", "Information"): GENERAL_INFORMATION_PROMPT,
    ("Storage", "Intent"): STORAGE_INTENT_PROMPT,
    ("Storage", "GeneralInformation"): STORAGE_GENERAL_INFORMATION_PROMPT,
    ("Storage", "StorageAccounts"): STORAGE_ACCOUNTS_PROMPT,
    ("Storage", "StorageAccount"): STORAGE_ACCOUNT_PROMPT,
    ("Storage", "EntityRecognition"): ENTITY_RECOGNITION_PROMPT,
}


def get_prompt_template(plugin: str, function: str) -> str:
    """Get the task prompt for a model function.

    Raises:
        KeyError: If no template is registered for the function
    """
    try:
        return PROMPT_TEMPLATES[(plugin, function)]
    except KeyError:
        raise KeyError(f"No prompt template for {plugin}/{function}") from None


def build_system_prompt(
    plugin: str,
    function: str,
    arguments: dict[str, Any] | None = None,
) -> str:
    """Generate the system prompt for a model function.

    Args:
        plugin: Plugin (intent) name
        function: Function name within the plugin
        arguments: Argument bag; ``grounding_rules`` and ``context`` are used

    Returns:
        Formatted system prompt string
    """
    arguments = arguments or {}
    parts = [SYSTEM_PROMPT]

    rules = arguments.get("grounding_rules") or []
    if rules:
        parts.append("## Rules\n\n" + "\n".join(f"- {rule}" for rule in rules))

    parts.append("## Task\n\n" + get_prompt_template(plugin, function))

    context = arguments.get("context")
    if context:
        parts.append(f"## Context\n\n{context}")

    return "\n\n".join(parts)


def build_messages(
    question: str,
    plugin: str,
    function: str,
    arguments: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Build the chat completion messages for a model function.

    Chat history turns (``chat_history`` argument) become alternating
    user/assistant messages between the system prompt and the question.
    """
    arguments = arguments or {}
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": build_system_prompt(plugin, function, arguments)}
    ]

    for turn in arguments.get("chat_history") or []:
        messages.append({"role": "user", "content": turn.question})
        messages.append({"role": "assistant", "content": turn.answer})

    messages.append({"role": "user", "content": question})
    return messages
