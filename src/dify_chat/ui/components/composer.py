"""Message composer with file drop."""

from __future__ import annotations

import mimetypes
from typing import List

import solara

from dify_chat.models.chat import StagedFile
from dify_chat.state import ChatController
from dify_chat.ui.hooks import use_chat_state


def staged_file_from_drop(info) -> StagedFile:
    data = info.get("data")
    if data is None and info.get("file_obj") is not None:
        data = info["file_obj"].read()
    data = data or b""
    return StagedFile(
        name=info["name"],
        size=int(info.get("size") or len(data)),
        content_type=mimetypes.guess_type(info["name"])[0] or "application/octet-stream",
        data=data,
    )


@solara.component
def Composer(controller: ChatController, user_id: str):
    state = use_chat_state(controller.store)
    composer = state.composer
    sending = state.is_sending(state.active_key)
    upload_disabled = bool(state.usage and state.usage.upload_disabled)
    rejections, set_rejections = solara.use_state([], key="dc-composer-rejections")

    def handle_files(infos: List[dict]):
        set_rejections(controller.stage_files([staged_file_from_drop(info) for info in infos], user_id))

    def handle_send(*_ignore):
        set_rejections([])
        controller.send(user_id)

    can_send = bool(composer.text.strip() or composer.staged_files) and not sending

    with solara.Column(classes=["dc-composer"], style={"gap": "0.5rem"}):
        if state.usage is not None and state.usage.reason:
            solara.Warning(state.usage.reason, dense=True)
        for reason in rejections:
            solara.Error(reason, dense=True)
        if composer.staged_files:
            with solara.Row(style={"flexWrap": "wrap", "gap": "0.25rem"}):
                for index, staged in enumerate(composer.staged_files):
                    solara.Button(
                        staged.name,
                        icon_name="mdi-close",
                        small=True,
                        outlined=True,
                        on_click=lambda index=index: controller.remove_staged_file(index),
                    )
        if not upload_disabled:
            solara.FileDropMultiple(label="Drop files to attach", on_file=handle_files, lazy=False)
        with solara.Row(style={"gap": "0.5rem", "alignItems": "flex-end"}):
            solara.InputTextArea(
                "Message",
                value=composer.text,
                on_value=controller.set_input,
                rows=3,
                continuous_update=True,
            )
            solara.Button("Send", color="primary", disabled=not can_send, on_click=handle_send)
