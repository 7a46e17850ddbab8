"""Panel listing the citations behind the latest answer."""

from __future__ import annotations

import solara

from dify_chat.state import ChatController
from dify_chat.ui.hooks import use_chat_state


@solara.component
def ResourcePanel(controller: ChatController):
    state = use_chat_state(controller.store)
    resources = state.resources.get(state.active_key) or []

    with solara.Card("Resources", classes=["dc-resources"], style={"minWidth": "280px"}):
        if not resources:
            solara.Text("No sources for this conversation.", classes=["caption", "text-medium-emphasis"])
            return
        for citation in resources:
            with solara.Column(classes=["dc-citation"], style={"gap": "0.25rem", "marginBottom": "0.75rem"}):
                with solara.Row(justify="space-between"):
                    solara.Text(citation.document_name, classes=["subtitle-2"])
                    solara.Text(f"{citation.display_percent}%", classes=["caption"])
                solara.ProgressLinear(value=citation.display_percent)
                solara.Markdown(citation.content)
