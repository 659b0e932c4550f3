"""Email template rendering for rss2email."""

import html
import quopri
from email.header import Header
from pathlib import Path

from jinja2 import Environment, StrictUndefined
from jinja2 import TemplateError as JinjaTemplateError

from .config import default_template_path
from .logging_config import create_execution_logger
from .models import Feed, FeedItem, NotificationContext

BOUNDARY = "rss2email-7b1f9a6c2e4d4b08a3f5c6d7e8f90a1b"

DEFAULT_TEMPLATE = f"""\
Content-Type: multipart/alternative; boundary="{BOUNDARY}"
From: {{{{ from_address }}}}
To: {{{{ to_address }}}}
Subject: [rss2email] {{{{ subject | encodeheader }}}}
X-RSS-Link: {{{{ link }}}}
X-RSS-Feed: {{{{ feed }}}}
Mime-Version: 1.0

--{BOUNDARY}
Content-Type: text/plain; charset=UTF-8
Content-Transfer-Encoding: quoted-printable

{{{{ link | quoteprintable }}}}

{{{{ text }}}}

--{BOUNDARY}
Content-Type: text/html; charset=UTF-8
Content-Transfer-Encoding: quoted-printable

<p><a href=3D"{{{{ link | quoteprintable }}}}">{{{{ subject | e | quoteprintable }}}}</a></p>
{{{{ html }}}}
<p>Feed: <a href=3D"{{{{ feed | quoteprintable }}}}">{{{{ feed_title | e | quoteprintable }}}}</a></p>

--{BOUNDARY}--
"""


class TemplateError(RuntimeError):
    """Raised when the email template cannot be loaded or rendered."""


def quoted_printable(value: str) -> str:
    """Encode text as quoted-printable for a MIME body part."""
    return quopri.encodestring(value.encode("utf-8")).decode("ascii")


def encode_header(value: str) -> str:
    """Encode a header value, using RFC 2047 words only when needed."""
    value = " ".join(value.splitlines())
    if value.isascii():
        return value
    return Header(value, "utf-8").encode()


class TemplateRenderer:
    """Renders notification emails from a Jinja2 template."""

    def __init__(self, template_path: str | Path | None = None, execution_id: str | None = None):
        """Initialize the renderer.

        Args:
            template_path: User template overriding the default, defaults to
                ~/.rss2email/email.tmpl
            execution_id: Execution ID for logging context
        """
        self.template_path = Path(template_path) if template_path else default_template_path()
        self.logger = create_execution_logger("template", execution_id)
        self.environment = Environment(
            autoescape=False,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )
        for name, function in (
            ("quoteprintable", quoted_printable),
            ("encodeheader", encode_header),
        ):
            self.environment.filters[name] = function
            self.environment.globals[name] = function

    def load_source(self) -> str:
        """Return the template text: the user's file if present, else the default.

        Raises:
            TemplateError: If the override exists but cannot be read
        """
        if not self.template_path.exists():
            return DEFAULT_TEMPLATE

        try:
            source = self.template_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateError(f"failed to read {self.template_path}: {e}") from e

        self.logger.debug("Using template override", path=str(self.template_path))
        return source

    def load_template(self):
        """Compile the active template.

        Raises:
            TemplateError: If the template cannot be read or parsed
        """
        source = self.load_source()
        try:
            return self.environment.from_string(source)
        except JinjaTemplateError as e:
            raise TemplateError(f"invalid email template: {e}") from e

    def build_context(
        self, feed: Feed, item: FeedItem, recipient: str, text: str, html_body: str
    ) -> NotificationContext:
        """Build the template context for one item and recipient.

        Both bodies are quoted-printable encoded unconditionally; the HTML body
        is unescaped first.
        """
        return NotificationContext(
            feed=feed.link,
            feed_title=feed.title,
            subject=item.title,
            link=item.link,
            text=quoted_printable(text),
            html=quoted_printable(html.unescape(html_body)),
            from_address=recipient,
            to_address=recipient,
            rss_feed=feed,
            rss_item=item,
        )

    def render(self, context: NotificationContext, template=None) -> bytes:
        """Render a complete MIME message for the given context.

        Raises:
            TemplateError: If the template cannot be loaded or rendered
        """
        if template is None:
            template = self.load_template()

        try:
            message = template.render(vars(context))
        except JinjaTemplateError as e:
            raise TemplateError(f"failed to render email template: {e}") from e

        return message.encode("utf-8")
