"""
schedule.py
===========

Keep the stored join parameters fresh. Bootstrap tokens and certificate
keys expire, so a cron job on the control plane stores new ones at a
fixed interval. Its output goes to a log file rotated by logrotate.
"""
import os
import textwrap

from kubeprov.util.logger import Logger
from kubeprov.util.util import name_validation

LOGGER = Logger(__name__)

JOB_NAME = "parameter-store-backup"
LOG_FILE = "/var/log/parameter-store-backup.log"
STORE_VARIABLE = "KUBEPROV_STORE"


class BackupSchedule:
    """The cron job and log rotation policy of the parameter backup.

    Args:
        cluster_id (str): the cluster whose parameters are stored
        location (str): the parameter store, passed to the job through
            ``KUBEPROV_STORE``
        interval_hours (int): hours between two runs, must divide 24
        log_file (str): where the job output is appended
        command (str): the kubeprov executable

    Raises:
        ValueError if the cluster id is not a valid cluster name, the
        location is empty or has whitespace, or the interval is invalid
    """

    def __init__(self, cluster_id, location, interval_hours=6,
                 log_file=LOG_FILE, command="kubeprov"):
        # both end up in a file cron hands to /bin/sh as root
        name_validation(cluster_id)
        if not location or any(c.isspace() for c in location):
            raise ValueError("location can't be empty or contain whitespace")
        if interval_hours not in range(1, 25) or 24 % interval_hours:
            raise ValueError("interval_hours must divide 24")

        self.cluster_id = cluster_id
        self.location = location
        self.interval_hours = interval_hours
        self.log_file = log_file
        self.command = command

    @property
    def hours(self):
        """the hour field of the crontab entry"""
        if self.interval_hours == 24:
            return "0"
        if self.interval_hours == 1:
            return "*"
        return f"*/{self.interval_hours}"

    def crontab(self):
        """the content of the /etc/cron.d file"""
        return textwrap.dedent("""\
            # m h dom mon dow user command
            PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin
            {var}={location}
            0 {hours} * * * root {command} store {cluster_id} >> {log} 2>&1
            """).format(var=STORE_VARIABLE, location=self.location,
                        hours=self.hours, command=self.command,
                        cluster_id=self.cluster_id, log=self.log_file)

    def logrotate(self):
        """rotate weekly, keep 4 compressed rotations"""
        return textwrap.dedent("""\
            {log} {{
                weekly
                rotate 4
                compress
                missingok
                notifempty
                create 0640 root root
            }}
            """).format(log=self.log_file)

    def install(self, cron_dir="/etc/cron.d",
                logrotate_dir="/etc/logrotate.d"):
        """Write the cron job and the logrotate policy.

        Returns:
            tuple with the paths of both files
        """
        LOGGER.info("Creating parameter store cronjob to back up parameters "
                    "every %d hours...", self.interval_hours)
        cron_path = os.path.join(cron_dir, JOB_NAME)
        with open(cron_path, "w") as fh:
            fh.write(self.crontab())
        os.chmod(cron_path, 0o644)

        LOGGER.info("Setting up log rotation for parameter store backup logs...")
        rotate_path = os.path.join(logrotate_dir, JOB_NAME)
        with open(rotate_path, "w") as fh:
            fh.write(self.logrotate())

        return cron_path, rotate_path
