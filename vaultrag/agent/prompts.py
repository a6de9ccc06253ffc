from __future__ import annotations

from typing import Optional


def build_messages(context: str, user_message: str, project_id: Optional[str] = None) -> list[dict[str, str]]:
    scope = f"Project {project_id}: focused analysis" if project_id else "Workspace overview"
    system_prompt = (
        "You are the Knowledge Vault assistant. Answer using the vault data below first; "
        "when it is insufficient, complete with general knowledge and say which parts come "
        "from the vault and which do not. Be concise and suggest concrete actions.\n\n"
        f"Scope: {scope}\n\n"
        f"Vault data:\n{context}"
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message},
    ]


def prompt_text(messages: list[dict[str, str]]) -> str:
    # Flattened prompt used for input-token estimates.
    return "\n".join(message.get("content", "") for message in messages)
