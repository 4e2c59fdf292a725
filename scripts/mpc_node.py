#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
ROS node wrapping the MPC path tracking controller.

Usage:
    rosrun mpc_path_tracker mpc_node.py steps_ahead dt latency cte_coeff epsi_coeff
        speed_coeff acc_coeff steer_coeff consec_acc_coeff consec_steer_coeff debug
"""

import logging
import sys

import rospy
from geometry_msgs.msg import Point
from nav_msgs.msg import Odometry
from std_msgs.msg import Float32
from visualization_msgs.msg import Marker

# Import from installed package (via setup.py)
from mpc_path_tracker.actuation import CommandPublisher, Overlay
from mpc_path_tracker.controller_node import MpcControllerNode
from mpc_path_tracker.params import ConfigError, load_config, parse_params
from mpc_path_tracker.telemetry import quaternion_to_yaw


class RosCommandPublisher(CommandPublisher):
    """Publishes commands and debug line strips on ROS topics."""

    def __init__(self, publish_acceleration: bool):
        self.angle_pub = rospy.Publisher('/mpc/angle', Float32, queue_size=1)
        self.throttle_pub = None
        if publish_acceleration:
            self.throttle_pub = rospy.Publisher('/mpc/throttle', Float32, queue_size=1)
        self.overlay_pubs = {
            name: rospy.Publisher(f'/mpc/{name}', Marker, queue_size=1)
            for name in ('closest', 'next_pos', 'poly')
        }
        self._marker_id = 0

    def publish_steering(self, value: float):
        self.angle_pub.publish(Float32(data=value))

    def publish_acceleration(self, value: float):
        if self.throttle_pub is not None:
            self.throttle_pub.publish(Float32(data=value))

    def publish_overlay(self, overlay: Overlay):
        marker = Marker()
        marker.header.frame_id = '/' + overlay.frame_id
        marker.header.stamp = rospy.Time.now()
        marker.id = self._marker_id
        self._marker_id += 1
        marker.type = Marker.LINE_STRIP
        marker.action = Marker.ADD
        marker.pose.orientation.w = 1.0
        marker.scale.x = overlay.scale
        marker.color.r, marker.color.g, marker.color.b = overlay.color
        marker.color.a = overlay.alpha
        marker.points = [Point(x=float(px), y=float(py), z=0.0) for px, py in overlay.points]
        self.overlay_pubs[overlay.name].publish(marker)


class MpcRosNode:
    """Feeds ROS telemetry into the controller and spins its loop."""

    def __init__(self, argv):
        rospy.init_node('mpc_node', anonymous=False)

        try:
            params = parse_params(argv)
            config = load_config(rospy.get_param('~config', None))
        except ConfigError as e:
            rospy.logfatal(f"Invalid parameters: {e}")
            raise

        self.publisher = RosCommandPublisher(config.publish_acceleration)
        self.controller = MpcControllerNode(params, self.publisher, config=config)
        self.store = self.controller.store

        rospy.Subscriber('/centerline', Marker, self.centerline_callback, queue_size=1)
        rospy.Subscriber('/odom', Odometry, self.odom_callback, queue_size=1)
        rospy.Subscriber('/pf/pose/odom', Odometry, self.pose_callback, queue_size=1)
        rospy.loginfo(f"MPC node started: N={params.steps_ahead}, dt={params.dt}, "
                      f"latency={params.latency}, backend={config.solver_backend}")

    def centerline_callback(self, msg: Marker):
        self.store.update_path([(p.x, p.y) for p in msg.points])

    def odom_callback(self, msg: Odometry):
        self.store.update_speed(msg.twist.twist.linear.x)

    def pose_callback(self, msg: Odometry):
        pose = msg.pose.pose
        q = pose.orientation
        self.store.update_pose(pose.position.x, pose.position.y,
                               heading=quaternion_to_yaw(q.x, q.y, q.z, q.w))

    def spin(self):
        self.controller.spin(should_continue=lambda: not rospy.is_shutdown())


def main():
    """Main function."""
    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(name)s: %(message)s')
    argv = rospy.myargv(argv=sys.argv)[1:]
    try:
        node = MpcRosNode(argv)
        node.spin()
    except ConfigError:
        return 1
    except rospy.ROSInterruptException:
        pass
    return 0


if __name__ == '__main__':
    sys.exit(main())
