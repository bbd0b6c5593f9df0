from django.apps import apps
from django.test.runner import DiscoverRunner


class InstalledAppsOnlyDiscoverRunner(DiscoverRunner):
    """Without labels, run only the tests of the project's own ``apps.*`` packages."""

    project_prefix = 'apps.'

    def project_labels(self):
        return [
            app_config.name
            for app_config in apps.get_app_configs()
            if app_config.name.startswith(self.project_prefix)
        ]

    def build_suite(self, test_labels=None, *args, **kwargs):
        return super().build_suite(list(test_labels or self.project_labels()), *args, **kwargs)
