"""cloud-proxy: run a command across a fleet of disposable DigitalOcean droplets.

Example:
    from cloudproxy import FleetOrchestrator, RunConfig, SSHTransport, load_credential
    from cloudproxy.providers.digitalocean import DigitalOceanProvider

    config = RunConfig(count=3, command="nmap -p {{ports}} scanme.nmap.org", ports="1-1000")
    credential = load_credential(config.key_location)

    async with DigitalOceanProvider(token=token) as provider:
        await FleetOrchestrator(config, provider, SSHTransport(), credential).run()
"""

__version__ = "1.1.0"

from cloudproxy.config import RunConfig
from cloudproxy.credentials import Credential, load_credential
from cloudproxy.exceptions import (
    CloudProxyError,
    CommandError,
    ConfigurationError,
    CredentialError,
    NoEligibleRegionsError,
    PortSpecError,
    ProviderError,
    ProvisioningError,
    SafetyCapExceededError,
    TemplateError,
    TransportError,
)
from cloudproxy.instance import Instance, InstanceState
from cloudproxy.orchestrator import FleetOrchestrator, TeardownReport, teardown
from cloudproxy.ports import split_contiguous
from cloudproxy.regions import allocate
from cloudproxy.template import TemplateVars, render
from cloudproxy.transport import SSHTransport
from cloudproxy.worker import SessionWorker, WorkerResult

__all__ = [
    "__version__",
    "CloudProxyError",
    "CommandError",
    "ConfigurationError",
    "Credential",
    "CredentialError",
    "FleetOrchestrator",
    "Instance",
    "InstanceState",
    "NoEligibleRegionsError",
    "PortSpecError",
    "ProviderError",
    "ProvisioningError",
    "RunConfig",
    "SafetyCapExceededError",
    "SSHTransport",
    "SessionWorker",
    "TeardownReport",
    "TemplateError",
    "TemplateVars",
    "TransportError",
    "WorkerResult",
    "allocate",
    "load_credential",
    "render",
    "split_contiguous",
    "teardown",
]
