import pytest
import requests

from cvefabric.core.advisories import query_ghsa
from cvefabric.core.utils import AdvisoryError


def _node(ghsa_id="GHSA-1111-2222-3333", identifiers=None, severity="MODERATE", score=5.3, patched="1.2.4"):
    return {
        "advisory": {
            "ghsaId": ghsa_id,
            "identifiers": identifiers if identifiers is not None else [
                {"type": "GHSA", "value": ghsa_id},
                {"type": "CVE", "value": "CVE-2023-1111"},
            ],
            "summary": "Regular expression denial of service",
            "severity": severity,
            "cvss": {"score": score},
        },
        "package": {"ecosystem": "NPM", "name": "semver"},
        "vulnerableVersionRange": "< 1.2.4",
        "firstPatchedVersion": {"identifier": patched} if patched else None,
    }


def _payload(*nodes):
    return {"data": {"securityVulnerabilities": {"nodes": list(nodes)}}}


def test_maps_nodes_to_advisories(http):
    http.add(data=_payload(_node()))
    (advisory,) = query_ghsa("npm", "semver", "tok", session=http)

    assert advisory.ghsa_id == "GHSA-1111-2222-3333"
    assert advisory.cve_id == "CVE-2023-1111"
    assert advisory.severity == "MODERATE"
    assert advisory.cvss_score == 5.3
    assert advisory.first_patched_version == "1.2.4"
    assert advisory.vulnerable_version_range == "< 1.2.4"

    call = http.calls[0]
    assert call["json"]["variables"] == {"ecosystem": "NPM", "package": "semver"}
    assert call["headers"]["Authorization"] == "bearer tok"


def test_missing_cve_zero_score_and_no_patch(http):
    http.add(data=_payload(_node(identifiers=[], score=0, patched=None)))
    (advisory,) = query_ghsa("npm", "semver", "tok", session=http)
    assert advisory.cve_id is None
    assert advisory.cvss_score is None
    assert advisory.first_patched_version is None


def test_ecosystem_mapping(http):
    http.add(data=_payload())
    assert query_ghsa("cargo", "serde", "tok", session=http) == []
    assert http.calls[0]["json"]["variables"]["ecosystem"] == "RUST"


@pytest.mark.parametrize(
    "status, data, match",
    [
        (401, {"message": "Bad credentials"}, "HTTP 401"),
        (200, None, "invalid JSON"),
        (200, {"errors": [{"message": "Field 'x' doesn't exist"}]}, "Field 'x' doesn't exist"),
    ],
)
def test_failures_raise_advisory_error(http, status, data, match):
    http.add(status, data=data, text="not json" if data is None else "")
    with pytest.raises(AdvisoryError, match=match):
        query_ghsa("npm", "semver", "tok", session=http)


def test_connection_error(http):
    http.add_error(requests.ConnectionError("refused"))
    with pytest.raises(AdvisoryError, match="refused"):
        query_ghsa("npm", "semver", "tok", session=http)
