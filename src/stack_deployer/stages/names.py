"""Stage names in fixed execution order."""

INFRASTRUCTURE = "infrastructure-provision"
CLUSTER_CONFIGURE = "cluster-configure"
INGRESS_CONTROLLER = "ingress-controller-install"
MONITORING = "monitoring-stack-deploy"
IMAGE = "image-build-and-publish"
RELEASE = "application-release"
INGRESS_RULE = "ingress-rule-apply"
VERIFY = "deployment-verify"

DEPLOYMENT_ORDER = [
    INFRASTRUCTURE,
    CLUSTER_CONFIGURE,
    INGRESS_CONTROLLER,
    MONITORING,
    IMAGE,
    RELEASE,
    INGRESS_RULE,
    VERIFY,
]
