import pytest

from oai_harvester.config import HarvestConfig
from oai_harvester.oai_client import HarvestClient

OAI_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<OAI-PMH xmlns="http://www.openarchives.org/OAI/2.0/" '
    'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">\n'
    "<responseDate>2024-05-01T12:00:00Z</responseDate>\n"
)
OAI_FOOTER = "</OAI-PMH>\n"

DC_OPEN = (
    '<oai_dc:dc xmlns:oai_dc="http://www.openarchives.org/OAI/2.0/oai_dc/" '
    'xmlns:dc="http://purl.org/dc/elements/1.1/">'
)


def identify_xml(body: str) -> str:
    return f"{OAI_HEADER}<Identify>{body}</Identify>\n{OAI_FOOTER}"


def record_xml(identifier: str = "oai:example.org:article/1", dc: str = "", datestamp: str = "2024-01-15") -> str:
    return (
        "<record><header>"
        f"<identifier>{identifier}</identifier><datestamp>{datestamp}</datestamp>"
        "<setSpec>journal:ART</setSpec>"
        f"</header><metadata>{DC_OPEN}{dc}</oai_dc:dc></metadata></record>"
    )


def list_records_xml(records=(), token=None) -> str:
    token_xml = ""
    if token is not None:
        token_xml = f'<resumptionToken completeListSize="250" cursor="0">{token}</resumptionToken>'
    return f"{OAI_HEADER}<ListRecords>{''.join(records)}{token_xml}</ListRecords>\n{OAI_FOOTER}"


def page_of(count: int, token=None, start: int = 1) -> str:
    records = [
        record_xml(identifier=f"oai:example.org:article/{n}", dc=f"<dc:title>Article {n}</dc:title>")
        for n in range(start, start + count)
    ]
    return list_records_xml(records, token)


class FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200, reason: str = "OK"):
        self.content = text.encode("utf-8")
        self.headers = {"Content-Type": "text/xml; charset=utf-8"}
        self.encoding = "utf-8"
        self.status_code = status_code
        self.reason = reason

    @property
    def text(self):
        return self.content.decode(self.encoding)


class FakeSession:
    """Serves queued responses (or raises queued exceptions) and records the URLs requested."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return FakeResponse(response)
        return response


@pytest.fixture
def make_client():
    def _make(*responses, **config):
        session = FakeSession(*responses)
        sleeps = []
        client = HarvestClient(HarvestConfig(**config), session=session, sleep=sleeps.append)
        client.sleeps = sleeps
        return client, session

    return _make
