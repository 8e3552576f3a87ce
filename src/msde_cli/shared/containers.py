"""Container names of the developer stack."""

# Primary game server; its health gates the boot
PRIMARY_SERVICE = "msde-vm-dev"

BOT_SERVICE = "bot-vm-dev"
METRICS_SERVICE = "grafana-vm-dev"
WEB3_SERVICE = "web3-vm-dev"

# Compose project name, derived by compose from the docker/ directory
COMPOSE_PROJECT = "docker"
