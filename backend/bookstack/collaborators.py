# Overview: Registry of external collaborators (notifier, mailer, invoice renderer, blob store).

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from flask import Flask, current_app

from .services.blob_service import BlobStore, LocalBlobStore
from .services.invoice_service import InvoiceRenderer, TextInvoiceRenderer
from .services.mail_service import LogMailer, Mailer
from .services.notification_service import DatabaseNotifier, Notifier


EXTENSION_KEY = "bookstack"


@dataclass(frozen=True)
class Collaborators:
    notifier: Notifier
    mailer: Mailer
    invoice_renderer: InvoiceRenderer
    blob_store: BlobStore


def init_collaborators(app: Flask, **overrides) -> Collaborators:
    """
    Build the default collaborators from app config and register them on
    the app. Keyword overrides replace individual collaborators (tests
    inject recording fakes this way).
    """
    collaborators = Collaborators(
        notifier=DatabaseNotifier(),
        mailer=LogMailer(from_address=app.config["MAIL_FROM"]),
        invoice_renderer=TextInvoiceRenderer(),
        blob_store=LocalBlobStore(os.path.join(app.instance_path, app.config["BLOB_STORE_ROOT"])),
    )
    if overrides:
        collaborators = replace(collaborators, **overrides)

    app.extensions[EXTENSION_KEY] = collaborators
    return collaborators


def get_collaborators() -> Collaborators:
    return current_app.extensions[EXTENSION_KEY]
