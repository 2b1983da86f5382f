from .models import TemplateSpec

STARTUP_LOG = "/var/log/startup-script.log"


def registry_host(image_url):
    """Host part of an image reference, e.g. asia-south1-docker.pkg.dev"""
    if "/" not in image_url:
        return ""
    host = image_url.split("/", 1)[0]
    return host if ("." in host or ":" in host) else ""


def render_startup_script(image_url, container_name, port):
    """Boot script that installs Docker and runs the generation's container"""
    host = registry_host(image_url)
    lines = [
        "#!/bin/bash",
        "apt-get update -y",
        "apt-get install -y docker.io > /dev/null 2>&1",
        "systemctl enable docker",
        "systemctl start docker",
    ]
    if host:
        lines += [
            f"gcloud auth configure-docker {host} --quiet",
            'echo "Docker authenticated successfully."',
        ]
    lines += [
        f"docker pull {image_url}",
        f"docker stop {container_name} || true",
        f"docker rm {container_name} || true",
        f"docker run -d --restart=always -p {port}:{port} --name {container_name} {image_url}",
        f'echo "Container deployment completed: $(date)" >> {STARTUP_LOG}',
    ]
    return "\n".join(lines) + "\n"


def build_template_spec(config, generation):
    image = config.image_url(generation)
    return TemplateSpec(
        name=config.template_name(generation),
        image=image,
        machine_type=config.machine_type,
        image_family=config.image_family,
        image_project=config.image_project,
        service_account=config.service_account,
        metadata={"IMAGE": config.image_registry, "IMAGE_TAG": generation},
        startup_script=render_startup_script(image, config.container_name, config.container_port),
    )
