"""Argo CD bootstrap actions: namespace, Supervisor login, manifests, readiness."""

import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

import yaml

from common import ActionResult, run_command, wait_for
from config import DeploymentConfig
from vcenter import ApiError, get_session

logger = logging.getLogger(__name__)

# Kinds applied as-is; every other document is placed in the target namespace
CLUSTER_SCOPED_KINDS = frozenset({
    'APIService',
    'ClusterRole',
    'ClusterRoleBinding',
    'CustomResourceDefinition',
    'MutatingWebhookConfiguration',
    'Namespace',
    'PersistentVolume',
    'PriorityClass',
    'StorageClass',
    'ValidatingWebhookConfiguration',
})


def kube_context_name(config: DeploymentConfig) -> str:
    """kubectl context created by 'vcf context create' for the Argo CD namespace."""
    argocd = config.supervisor.argocd
    return f"{argocd.context_name}:{argocd.namespace}"


def kubectl(context: str, *args: str) -> list[str]:
    """Build a kubectl command bound to a context."""
    return ['kubectl', '--context', context, *args]


def load_manifest(path: Path, namespace: str) -> list[dict]:
    """Load the YAML documents of a manifest, namespaced ones moved to namespace.

    Empty documents are dropped.

    Raises:
        ValueError: If a document is not a Kubernetes object
    """
    with open(path, encoding='utf-8') as f:
        docs = [doc for doc in yaml.safe_load_all(f) if doc]
    for i, doc in enumerate(docs):
        if not isinstance(doc, dict) or 'kind' not in doc:
            raise ValueError(f"{path}: document {i + 1} is not a Kubernetes object")
        if doc['kind'] not in CLUSTER_SCOPED_KINDS:
            doc.setdefault('metadata', {})['namespace'] = namespace
    return docs


@dataclass
class CreateNamespaceAction:
    """Create the vSphere Namespace that hosts Argo CD."""
    name: str
    timeout: int = 300
    interval: int = 10

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Create the namespace with the Supervisor storage policy when absent."""
        start = time.time()
        namespace = config.supervisor.argocd.namespace
        supervisor_id = context.get('supervisor_id')
        policy_id = context.get('storage_policy_id')
        if not supervisor_id or not policy_id:
            return ActionResult(
                success=False,
                message="supervisor_id and storage_policy_id required in context",
                duration=time.time() - start
            )

        rest = get_session(config, context).rest
        try:
            if rest.get_namespace(namespace) is not None:
                return ActionResult(
                    success=True,
                    message=f"Namespace {namespace} already exists - skipped",
                    duration=time.time() - start,
                    context_updates={'namespace': namespace}
                )

            logger.info(f"[{self.name}] Creating vSphere Namespace {namespace}...")
            rest.create_namespace(namespace, supervisor_id, policy_id)

            def probe():
                status = rest.get_namespace(namespace) or {}
                return status.get('config_status') == 'RUNNING'

            ready = wait_for(probe, f"namespace {namespace}", timeout=self.timeout, interval=self.interval)
        except ApiError as e:
            return ActionResult(
                success=False,
                message=f"Namespace creation failed: {e}",
                duration=time.time() - start
            )

        if not ready:
            return ActionResult(
                success=False,
                message=f"Namespace {namespace} not running after {self.timeout}s",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Namespace {namespace} created",
            duration=time.time() - start,
            context_updates={'namespace': namespace}
        )


@dataclass
class SupervisorLoginAction:
    """Create a vcf CLI context (and kubectl context) for the Supervisor."""
    name: str
    timeout: int = 120

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Log in to the Supervisor API endpoint with the vCenter credentials."""
        start = time.time()
        endpoint = context.get('supervisor_endpoint')
        if not endpoint:
            return ActionResult(
                success=False,
                message="No supervisor_endpoint in context",
                duration=time.time() - start
            )

        vc = config.infrastructure.vcenter
        context_name = config.supervisor.argocd.context_name
        env = {**os.environ, 'VCF_CLI_VSPHERE_PASSWORD': vc.password}

        # A stale context from an earlier run would make create fail
        rc, _, _ = run_command(['vcf', 'context', 'delete', context_name, '--yes'],
                               timeout=self.timeout, env=env)
        if rc == 0:
            logger.debug(f"[{self.name}] Removed existing context {context_name}")

        cmd = ['vcf', 'context', 'create', context_name,
               '--endpoint', endpoint,
               '--username', vc.username,
               '--auth-type', 'basic']
        if not vc.verify_ssl:
            cmd.append('--insecure-skip-tls-verify')

        logger.info(f"[{self.name}] Logging in to Supervisor at {endpoint} as {vc.username}...")
        rc, out, err = run_command(cmd, timeout=self.timeout, env=env)
        if rc != 0:
            return ActionResult(
                success=False,
                message=f"vcf context create failed: {err.strip() or out.strip()}",
                duration=time.time() - start
            )

        kube_context = kube_context_name(config)
        rc, out, err = run_command(kubectl(kube_context, 'get', 'namespace',
                                           config.supervisor.argocd.namespace, '-o', 'name'),
                                   timeout=self.timeout)
        if rc != 0:
            return ActionResult(
                success=False,
                message=f"kubectl context {kube_context} unusable: {err.strip()}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Logged in, kubectl context {kube_context}",
            duration=time.time() - start,
            context_updates={'kube_context': kube_context}
        )


@dataclass
class ApplyManifestAction:
    """kubectl apply one of the Argo CD manifests into the Argo CD namespace."""
    name: str
    manifest: str  # 'operator_manifest' or 'instance_manifest'
    timeout: int = 300

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Apply the manifest with its namespaced objects moved to the target namespace."""
        start = time.time()
        argocd = config.supervisor.argocd
        path = getattr(argocd, self.manifest)
        kube_context = context.get('kube_context') or kube_context_name(config)

        try:
            docs = load_manifest(path, argocd.namespace)
        except (OSError, yaml.YAMLError, ValueError) as e:
            return ActionResult(
                success=False,
                message=f"Cannot load {path}: {e}",
                duration=time.time() - start
            )
        if not docs:
            return ActionResult(
                success=False,
                message=f"{path} contains no documents",
                duration=time.time() - start
            )

        fd, tmp = tempfile.mkstemp(prefix=f'{self.name}-', suffix='.yaml')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                yaml.safe_dump_all(docs, f, default_flow_style=False, sort_keys=False)

            logger.info(f"[{self.name}] Applying {path.name} ({len(docs)} objects) "
                        f"to {argocd.namespace}...")
            rc, out, err = run_command(kubectl(kube_context, 'apply', '-f', tmp),
                                       timeout=self.timeout)
        finally:
            os.unlink(tmp)

        if rc != 0:
            return ActionResult(
                success=False,
                message=f"kubectl apply {path.name} failed: {err.strip() or out.strip()}",
                duration=time.time() - start
            )

        for line in out.strip().splitlines():
            logger.debug(f"[{self.name}] {line}")

        return ActionResult(
            success=True,
            message=f"Applied {len(docs)} objects from {path.name}",
            duration=time.time() - start
        )


@dataclass
class WaitForArgoCDAction:
    """Wait for the ArgoCD instance to report phase Available."""
    name: str
    interval: int = 15

    def run(self, config: DeploymentConfig, context: dict) -> ActionResult:
        """Poll the ArgoCD resource status and record the server address."""
        start = time.time()
        argocd = config.supervisor.argocd
        kube_context = context.get('kube_context') or kube_context_name(config)
        last = {'phase': ''}

        def probe():
            rc, out, err = run_command(
                kubectl(kube_context, '-n', argocd.namespace, 'get', 'argocd', argocd.instance_name,
                        '-o', 'jsonpath={.status.phase}'),
                timeout=60
            )
            if rc != 0:
                logger.debug(f"[{self.name}] {err.strip()}")
                return False
            last['phase'] = out.strip()
            return last['phase'] == 'Available'

        if not wait_for(probe, f"ArgoCD {argocd.instance_name}", timeout=argocd.timeout, interval=self.interval):
            return ActionResult(
                success=False,
                message=f"ArgoCD {argocd.instance_name} not available after {argocd.timeout}s "
                        f"(phase: {last['phase'] or 'unknown'})",
                duration=time.time() - start,
                context_updates={'argocd_phase': last['phase']}
            )

        context_updates = {'argocd_phase': last['phase']}
        rc, out, _ = run_command(
            kubectl(kube_context, '-n', argocd.namespace, 'get', 'service',
                    f"{argocd.instance_name}-server",
                    '-o', 'jsonpath={.status.loadBalancer.ingress[0].ip}'),
            timeout=60
        )
        server = out.strip() if rc == 0 else ''
        if server:
            context_updates['argocd_server'] = server

        return ActionResult(
            success=True,
            message=f"ArgoCD {argocd.instance_name} available" + (f" at https://{server}" if server else ''),
            duration=time.time() - start,
            context_updates=context_updates
        )
