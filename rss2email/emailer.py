"""Email delivery for rss2email.

Messages go out one of two ways:

1. Over SMTP, when SMTP_HOST, SMTP_USERNAME and SMTP_PASSWORD are all set.
2. By piping them into a local sendmail binary otherwise.

The choice is made once per send, from configuration alone. A failing SMTP
delivery is reported; it never falls back to sendmail.
"""

import re
import smtplib
import subprocess
from abc import ABC, abstractmethod

from .config import Config, SMTPConfig
from .logging_config import create_execution_logger
from .models import Feed, FeedItem
from .template import TemplateRenderer


LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


class DeliveryError(RuntimeError):
    """Raised when a message cannot be delivered."""


class Transport(ABC):
    """Delivers a rendered message to a single recipient."""

    name = "transport"

    @abstractmethod
    def deliver(self, recipient: str, message: bytes) -> None:
        """Deliver message to recipient, raising DeliveryError on failure."""


class SMTPTransport(Transport):
    """Delivers messages through an authenticated SMTP server."""

    name = "smtp"

    def __init__(self, config: SMTPConfig, execution_id: str | None = None):
        self.config = config
        self.logger = create_execution_logger("smtp", execution_id)

    def is_local(self) -> bool:
        """True when the server runs on this machine."""
        return self.config.host in LOCAL_HOSTS

    def deliver(self, recipient: str, message: bytes) -> None:
        """Send message with recipient as envelope sender and sole recipient.

        Credentials are only sent over STARTTLS, unless the server is local.

        Raises:
            DeliveryError: On connection, authentication or transfer failure
        """
        server_address = f"{self.config.host}:{self.config.port}"
        # SMTP requires CRLF line endings; bytes bodies are not fixed up by smtplib.
        payload = re.sub(rb"(?<!\r)\n", b"\r\n", message)

        try:
            with smtplib.SMTP(
                self.config.host, self.config.port, timeout=self.config.timeout
            ) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
                elif not self.is_local():
                    raise smtplib.SMTPNotSupportedError(
                        "server does not offer STARTTLS, refusing to send credentials"
                    )
                server.login(self.config.username, self.config.password)
                server.sendmail(recipient, [recipient], payload)
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(
                f"SMTP delivery to {recipient} via {server_address} failed: {e}",
                recipient=recipient,
                error=str(e),
            )
            raise DeliveryError(
                f"error sending to {recipient} via {server_address} - {e}"
            ) from e

        self.logger.info("Message sent via SMTP", recipient=recipient)


class SendmailTransport(Transport):
    """Delivers messages by piping them into a local sendmail binary."""

    name = "sendmail"

    def __init__(self, sendmail_path: str = "/usr/sbin/sendmail", execution_id: str | None = None):
        self.sendmail_path = sendmail_path
        self.logger = create_execution_logger("sendmail", execution_id)

    def command(self, recipient: str) -> list[str]:
        """Command line delivering to recipient, who is also the sender."""
        return [self.sendmail_path, "-i", "-f", recipient, recipient]

    def deliver(self, recipient: str, message: bytes) -> None:
        """Pipe message into sendmail and wait for it to exit.

        Failing to read sendmail's output is only logged.

        Raises:
            DeliveryError: If sendmail cannot be started, written to, or exits
                unsuccessfully
        """
        try:
            process = subprocess.Popen(
                self.command(recipient),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
            )
        except OSError as e:
            self.logger.error(
                f"Failed to start {self.sendmail_path}: {e}",
                recipient=recipient,
                error=str(e),
            )
            raise DeliveryError(f"error starting {self.sendmail_path} for {recipient} - {e}") from e

        finished = False
        try:
            try:
                process.stdin.write(message)
                process.stdin.close()
            except OSError as e:
                self.logger.error(
                    f"Failed to write to sendmail pipe: {e}",
                    recipient=recipient,
                    error=str(e),
                )
                raise DeliveryError(f"error writing message for {recipient} to sendmail - {e}") from e

            try:
                output = process.stdout.read()
                if output:
                    self.logger.debug(
                        "sendmail output",
                        recipient=recipient,
                        output=output.decode("utf-8", errors="replace"),
                    )
            except OSError as e:
                self.logger.warning(
                    f"Error reading sendmail output: {e}",
                    recipient=recipient,
                    error=str(e),
                )

            # Once waited on, the process is not killed or waited on again.
            finished = True
            try:
                returncode = process.wait()
            except OSError as e:
                self.logger.error(
                    f"Waiting for sendmail to terminate failed: {e}",
                    recipient=recipient,
                    error=str(e),
                )
                raise DeliveryError(f"error waiting for sendmail ({recipient}) - {e}") from e

            if returncode != 0:
                self.logger.error(
                    f"sendmail exited with status {returncode}",
                    recipient=recipient,
                )
                raise DeliveryError(f"sendmail exited with status {returncode} for {recipient}")
        finally:
            if not finished:
                process.kill()
                process.wait()
            for stream in (process.stdin, process.stdout):
                if stream and not stream.closed:
                    stream.close()

        self.logger.info("Message handed to sendmail", recipient=recipient)


def select_transport(config: Config, execution_id: str | None = None) -> Transport:
    """Choose SMTP when it is fully configured, sendmail otherwise."""
    if config.smtp.is_configured:
        return SMTPTransport(config.smtp, execution_id=execution_id)
    return SendmailTransport(config.sendmail_path, execution_id=execution_id)


class Emailer:
    """Sends one feed item as an email to a list of recipients."""

    def __init__(
        self,
        feed: Feed,
        item: FeedItem,
        config: Config | None = None,
        renderer: TemplateRenderer | None = None,
        transport: Transport | None = None,
        execution_id: str | None = None,
    ):
        """Initialize the emailer.

        Args:
            feed: Feed the item came from
            item: Item to notify about
            config: Configuration, read from the environment when omitted
            renderer: Template renderer, built from config when omitted
            transport: Fixed transport; chosen per send from config when omitted
            execution_id: Execution ID for logging context
        """
        self.feed = feed
        self.item = item
        self.config = config or Config.from_env()
        self.renderer = renderer or TemplateRenderer(
            self.config.template_path, execution_id=execution_id
        )
        self.transport = transport
        self.execution_id = execution_id
        self.logger = create_execution_logger("emailer", execution_id)

    def send(self, addresses: list[str], text: str, html: str) -> None:
        """Send the item to each address in turn.

        The first failing address aborts the remaining ones.

        Raises:
            DeliveryError: If no address is given or a delivery fails
            TemplateError: If the template cannot be loaded or rendered
        """
        if not addresses:
            raise DeliveryError("empty recipient address, did you not setup a recipient?")

        transport = self.transport or select_transport(self.config, self.execution_id)
        template = self.renderer.load_template()

        for address in addresses:
            context = self.renderer.build_context(self.feed, self.item, address, text, html)
            message = self.renderer.render(context, template)

            self.logger.debug(
                f"Delivering via {transport.name}",
                recipient=address,
                item_title=self.item.title,
            )
            transport.deliver(address, message)
