"""oslo.config option definitions for the IPAM claims controller.

Deployments that already manage their agents through oslo-style ``.conf``
files can point ``--config`` at one; the options below mirror the keys of the
YAML configuration and are converted into the same mapping before
validation.
"""

from pathlib import Path

from oslo_config import cfg

controller_opts = [
    cfg.StrOpt('kubeconfig',
               default=None,
               help='Path to a kubeconfig file. '
                    'If not set, the in-cluster configuration is used.'),
    cfg.FloatOpt('client_timeout',
                 default=1.0,
                 help='Timeout in seconds of every API call made while '
                      'reconciling.'),
    cfg.IntOpt('workers',
               default=2,
               min=1,
               help='Number of reconcile worker threads.'),
    cfg.FloatOpt('backoff_base',
                 default=0.005,
                 help='Initial delay in seconds before a failed key is '
                      'requeued. Doubles on every consecutive failure.'),
    cfg.FloatOpt('backoff_max',
                 default=1000.0,
                 help='Upper bound in seconds of the requeue delay.'),
    cfg.StrOpt('default_net_nad_namespace',
               default='',
               help='Namespace stamped on the default-network selection '
                    'element of primary user-defined networks.'),
    cfg.IntOpt('vmi_lookup_retries',
               default=4,
               min=1,
               help='Attempts made by the admission webhook to read the VMI '
                    'of a launcher pod.'),
    cfg.FloatOpt('vmi_lookup_interval',
                 default=0.5,
                 help='Seconds between VMI lookup attempts.'),
    cfg.ListOpt('watch_kinds',
                default=['VirtualMachine', 'VirtualMachineInstance'],
                help='Object kinds watched for reconcile events.'),
    cfg.IntOpt('watch_timeout',
               default=300,
               help='Server side timeout in seconds of a single watch '
                    'request; the watch is restarted afterwards.'),
]

webhook_group = cfg.OptGroup('webhook', title='Admission webhook options')

webhook_opts = [
    cfg.BoolOpt('enabled',
                default=True,
                help='Serve the pod mutating admission webhook.'),
    cfg.StrOpt('host',
               default='0.0.0.0',
               help='Address the webhook binds to.'),
    cfg.PortOpt('port',
                default=9443,
                help='Port the webhook listens on.'),
    cfg.StrOpt('cert_dir',
               default=None,
               help='Directory holding tls.crt and tls.key. '
                    'If not set, the webhook is served over plain HTTP.'),
]


def register_opts(conf):
    """Register the controller options on ``conf``."""
    conf.register_opts(controller_opts)
    conf.register_group(webhook_group)
    conf.register_opts(webhook_opts, group=webhook_group)


def read_config_file(path):
    """Parse an oslo-style config file into the YAML configuration mapping.

    Args:
        path: Path of the ``.conf``/``.ini`` file.

    Returns:
        Dict with the same layout ``ipam_controller.config`` expects from YAML.
    """
    conf = cfg.ConfigOpts()
    register_opts(conf)
    conf(args=[],
         default_config_files=[str(Path(path))],
         default_config_dirs=[])

    return {
        'kubeconfig': conf.kubeconfig,
        'client_timeout': conf.client_timeout,
        'workers': conf.workers,
        'backoff_base': conf.backoff_base,
        'backoff_max': conf.backoff_max,
        'default_net_nad_namespace': conf.default_net_nad_namespace,
        'vmi_lookup_retries': conf.vmi_lookup_retries,
        'vmi_lookup_interval': conf.vmi_lookup_interval,
        'webhook': {
            'enabled': conf.webhook.enabled,
            'host': conf.webhook.host,
            'port': conf.webhook.port,
            'cert_dir': conf.webhook.cert_dir,
        },
        'watchers': [
            {'kind': kind, 'timeout_seconds': conf.watch_timeout}
            for kind in conf.watch_kinds
        ],
    }
