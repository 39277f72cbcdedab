"""User-facing chat messages and progress labels, per locale."""

from __future__ import annotations

import logging
from typing import Dict

LOG = logging.getLogger("codeai.messages")

DEFAULT_LOCALE = "en"

MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "label_processing": "Processing...",
        "label_uploading": "Uploading images...",
        "label_connecting": "Connecting to the AI...",
        "label_receiving": "Receiving the AI response...",
        "label_applying": "Applying changes...",
        "label_writing": "Writing {path}...",
        "upload_failed": "❌ Could not upload the images. Check your connection and try again.",
        "upload_partial": "⚠️ {count} image(s) could not be uploaded. Continuing with the ones that were uploaded.",
        "request_failed": "❌ Error: {error}",
        "request_failed_default": "Communication failure",
        "unexpected_error": "❌ Unexpected error. Please try again.",
        "no_payload": (
            "⚠️ The AI did not produce the file-changes JSON block, so nothing was modified. "
            "Try again with a more specific request, such as: \"Change the page title to 'Hello World'\""
        ),
        "truncated": (
            "⚠️ The file-changes block was cut off before it finished, so nothing was modified. "
            "Try a smaller or more specific request."
        ),
        "invalid": "⚠️ No usable edits were found in the response.",
        "empty_files": "⚠️ No files to change were found in the response.",
        "no_valid_files": "⚠️ The response listed files without valid content.",
        "commit_success": "✅ {count} file(s) committed to GitHub successfully!",
        "commit_link": "🔗 [View commits on GitHub]({url})",
        "pages_note": (
            "⏳ **Note:** If your site uses GitHub Pages, changes can take 1-2 minutes to show up in the deploy. "
            "Check the code tab to confirm the change was made."
        ),
        "commit_errors": "❌ {count} file(s) failed to write.",
    },
    "pt-BR": {
        "label_processing": "Processando...",
        "label_uploading": "Enviando imagens...",
        "label_connecting": "Conectando com a IA...",
        "label_receiving": "Recebendo resposta da IA...",
        "label_applying": "Aplicando alterações...",
        "label_writing": "Escrevendo {path}...",
        "upload_failed": "❌ Erro ao enviar as imagens. Verifique sua conexão e tente novamente.",
        "upload_partial": (
            "⚠️ {count} imagem(ns) não foi(ram) enviada(s). "
            "Continuando com as que foram enviadas com sucesso."
        ),
        "request_failed": "❌ Erro: {error}",
        "request_failed_default": "Falha na comunicação",
        "unexpected_error": "❌ Erro inesperado. Tente novamente.",
        "no_payload": (
            "⚠️ A IA não gerou o bloco JSON de alterações. Isso significa que nenhuma modificação foi feita. "
            "Tente novamente com um pedido mais específico, como: \"Mude o título da página para 'Olá Mundo'\""
        ),
        "truncated": (
            "⚠️ O bloco de alterações foi cortado antes de terminar, então nada foi modificado. "
            "Tente um pedido menor ou mais específico."
        ),
        "invalid": "⚠️ Nenhuma alteração utilizável foi encontrada na resposta.",
        "empty_files": "⚠️ Nenhum arquivo para alterar foi encontrado na resposta.",
        "no_valid_files": "⚠️ Arquivos sem conteúdo válido na resposta.",
        "commit_success": "✅ {count} arquivo(s) commitado(s) no GitHub com sucesso!",
        "commit_link": "🔗 [Ver commits no GitHub]({url})",
        "pages_note": (
            "⏳ **Nota:** Se seu site usa GitHub Pages, as alterações podem levar 1-2 minutos para aparecer "
            "no deploy. Verifique o código na aba \"Código\" para confirmar que a modificação foi feita."
        ),
        "commit_errors": "❌ {count} arquivo(s) com erro ao escrever.",
    },
}


def message(key: str, locale: str = DEFAULT_LOCALE, **params: object) -> str:
    catalog = MESSAGES.get(locale)
    if catalog is None:
        LOG.debug("locale_unknown", extra={"locale": locale})
        catalog = MESSAGES[DEFAULT_LOCALE]
    template = catalog.get(key) or MESSAGES[DEFAULT_LOCALE][key]
    return template.format(**params) if params else template
