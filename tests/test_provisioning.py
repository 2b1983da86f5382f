from rollout_engine.provisioning import build_template_spec, render_startup_script, registry_host


def test_registry_host():
    assert registry_host("asia-south1-docker.pkg.dev/proj/repo/app:abc") == "asia-south1-docker.pkg.dev"
    assert registry_host("localhost:5000/app:abc") == "localhost:5000"
    assert registry_host("library/nginx:latest") == ""


def test_startup_script_runs_the_generation_image():
    script = render_startup_script("asia-south1-docker.pkg.dev/proj/repo/app:abc123", "simple-web-app", 8080)
    lines = script.splitlines()

    assert lines[0] == "#!/bin/bash"
    assert "gcloud auth configure-docker asia-south1-docker.pkg.dev --quiet" in lines
    assert "docker pull asia-south1-docker.pkg.dev/proj/repo/app:abc123" in lines
    assert ("docker run -d --restart=always -p 8080:8080 --name simple-web-app "
            "asia-south1-docker.pkg.dev/proj/repo/app:abc123") in lines
    # Old container is replaced before the new one starts
    assert lines.index("docker rm simple-web-app || true") < [
        i for i, l in enumerate(lines) if l.startswith("docker run")
    ][0]


def test_startup_script_skips_auth_for_docker_hub():
    script = render_startup_script("nginx:1.25", "web", 80)
    assert "configure-docker" not in script
    assert "-p 80:80" in script


def test_template_spec_for_generation(config):
    spec = build_template_spec(config, "abc123")

    assert spec.name == "it-abc123"
    assert spec.image == config.image_registry + ":abc123"
    assert spec.machine_type == "e2-micro"
    assert spec.image_family == "debian-11"
    assert spec.image_project == "debian-cloud"
    assert spec.metadata == {"IMAGE": config.image_registry, "IMAGE_TAG": "abc123"}
    assert spec.image in spec.startup_script
